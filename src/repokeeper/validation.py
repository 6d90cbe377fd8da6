from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass

from repokeeper.yaml_fragment import ArrayOf, Scalar


@dataclass(frozen=True)
class ValidatedValue:
    value: str
    valid: bool


@dataclass(frozen=True)
class ValidationOutcome:
    items: tuple[ValidatedValue, ...]
    is_array: bool

    @property
    def valid_values(self) -> tuple[str, ...]:
        return tuple(item.value for item in self.items if item.valid)

    @property
    def invalid_values(self) -> tuple[str, ...]:
        return tuple(item.value for item in self.items if not item.valid)


def validate(field_value: Scalar | ArrayOf, allowlist: Collection[str]) -> ValidationOutcome:
    if isinstance(field_value, Scalar):
        return ValidationOutcome(
            items=(ValidatedValue(field_value.value, field_value.value in allowlist),),
            is_array=False,
        )
    return ValidationOutcome(
        items=tuple(ValidatedValue(value, value in allowlist) for value in field_value.values),
        is_array=True,
    )


def partition(outcome: ValidationOutcome) -> tuple[tuple[str, ...], tuple[str, ...]]:
    return outcome.valid_values, outcome.invalid_values
