"""Structure definition errors.

All of these are fatal for the payslip being computed but never for the run:
the orchestrator records them against the employee and moves on.
"""

from __future__ import annotations


class StructureDefinitionError(Exception):
    """Base class for invalid salary structure definitions."""

    error_kind = "StructureDefinitionError"


class InvalidReferenceError(StructureDefinitionError):
    """Raised when a percentage base names a component outside the structure."""

    error_kind = "InvalidReference"

    def __init__(self, component_id: str, missing_id: str):
        self.component_id = component_id
        self.missing_id = missing_id
        super().__init__(
            f"Component {component_id} uses {missing_id} as percentage base, "
            "but it is not part of the structure"
        )


class CyclicDependencyError(StructureDefinitionError):
    """Raised when percentage bases form a cycle."""

    error_kind = "CyclicDependency"

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic percentage dependency: {' -> '.join(cycle)}")


class FormulaSyntaxError(StructureDefinitionError):
    """Raised when a formula cannot be parsed."""

    error_kind = "FormulaSyntaxError"

    def __init__(self, expression: str, position: int, message: str):
        self.expression = expression
        self.position = position
        super().__init__(f"{message} at position {position} in formula {expression!r}")


class UnknownIdentifierError(StructureDefinitionError):
    """Raised when a formula references a name not in scope."""

    error_kind = "UnknownIdentifier"

    def __init__(self, identifier: str, expression: str):
        self.identifier = identifier
        self.expression = expression
        super().__init__(
            f"Unknown identifier {identifier!r} in formula {expression!r}"
        )


class FormulaEvaluationError(StructureDefinitionError):
    """Raised when a well-formed formula cannot be evaluated (division by zero)."""

    error_kind = "FormulaEvaluationError"
