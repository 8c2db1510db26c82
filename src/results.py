from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class DuplicateStepError(ValueError):
    pass


def is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class ValidationResult:
    field: str
    ui_value: Any
    api_value: Any
    match: bool
    tolerance: float | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StepRecord:
    id: str
    description: str
    status: StepStatus = StepStatus.PENDING
    duration_ms: int = 0
    screenshot: str | None = None
    validations: list[ValidationResult] = field(default_factory=list)
    error: str | None = None
    # "action", "timeout" or "fatal" for failed steps
    error_kind: str | None = None

    @property
    def passed(self) -> bool:
        return self.status == StepStatus.PASSED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "passed": self.passed,
            "duration_ms": self.duration_ms,
            "screenshot": self.screenshot,
            "validations": [v.to_dict() for v in self.validations],
            "error": self.error,
            "error_kind": self.error_kind,
        }


@dataclass
class SuiteResult:
    name: str
    steps: list[StepRecord] = field(default_factory=list)
    total_steps: int = 0
    passed_steps: int = 0
    duration_ms: int = 0
    screenshots: list[str] = field(default_factory=list)
    fatal_error: str | None = None

    @property
    def failed_steps(self) -> int:
        return self.total_steps - self.passed_steps

    @property
    def pass_percent(self) -> int:
        if not self.total_steps:
            return 100
        return round(self.passed_steps / self.total_steps * 100)

    def record_step(self, step: StepRecord) -> StepRecord:
        if step.status not in (StepStatus.PASSED, StepStatus.FAILED):
            raise ValueError(f"Step {step.id} recorded before it finished (status={step.status.value})")
        if any(s.id == step.id for s in self.steps):
            raise DuplicateStepError(f"Step id {step.id!r} already recorded in suite {self.name!r}")
        self.steps.append(step)
        self.total_steps += 1
        if step.passed:
            self.passed_steps += 1
        return step

    def attach_screenshots(self, filenames: list[str]) -> None:
        for name in filenames:
            if name not in self.screenshots:
                self.screenshots.append(name)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "total_steps": self.total_steps,
            "passed_steps": self.passed_steps,
            "failed_steps": self.failed_steps,
            "duration_ms": self.duration_ms,
            "screenshots": list(self.screenshots),
            "fatal_error": self.fatal_error,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class RunSummary:
    suites: int
    total_steps: int
    passed_steps: int
    duration_ms: int
    screenshots: int
    log_file: str | None
    screenshot_dir: str

    @property
    def failed_steps(self) -> int:
        return self.total_steps - self.passed_steps

    @property
    def pass_rate(self) -> float:
        if not self.total_steps:
            return 100.0
        return self.passed_steps / self.total_steps * 100

    @property
    def all_passed(self) -> bool:
        return self.failed_steps == 0

    @classmethod
    def from_results(cls, results: list[SuiteResult], duration_ms: int, log_file: str | None, screenshot_dir: str) -> "RunSummary":
        return cls(
            suites=len(results),
            total_steps=sum(r.total_steps for r in results),
            passed_steps=sum(r.passed_steps for r in results),
            duration_ms=duration_ms,
            screenshots=sum(len(r.screenshots) for r in results),
            log_file=log_file,
            screenshot_dir=screenshot_dir,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["failed_steps"] = self.failed_steps
        data["pass_rate"] = round(self.pass_rate, 1)
        return data
