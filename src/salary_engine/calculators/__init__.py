"""Salary calculation engine."""

from salary_engine.calculators.errors import (
    CyclicDependencyError,
    FormulaEvaluationError,
    FormulaSyntaxError,
    InvalidReferenceError,
    StructureDefinitionError,
    UnknownIdentifierError,
)
from salary_engine.calculators.formula import Formula, evaluate_formula
from salary_engine.calculators.graph import ComponentGraph
from salary_engine.calculators.line_builder import LineItemBuilder
from salary_engine.calculators.payslip_assembler import PayslipAssembler
from salary_engine.calculators.proration import ProrationCalculator
from salary_engine.calculators.structure_evaluator import (
    StructureEvaluator,
    build_component_spec,
    validate_structure,
)

__all__ = [
    "ComponentGraph",
    "CyclicDependencyError",
    "Formula",
    "FormulaEvaluationError",
    "FormulaSyntaxError",
    "InvalidReferenceError",
    "LineItemBuilder",
    "PayslipAssembler",
    "ProrationCalculator",
    "StructureDefinitionError",
    "StructureEvaluator",
    "UnknownIdentifierError",
    "build_component_spec",
    "evaluate_formula",
    "validate_structure",
]
