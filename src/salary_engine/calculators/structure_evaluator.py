"""Per-employee evaluation of a salary structure."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache

from salary_engine.calculators.errors import StructureDefinitionError
from salary_engine.calculators.formula import BASIC_SALARY, Formula, identifier_for
from salary_engine.calculators.graph import ComponentGraph
from salary_engine.calculators.line_builder import LineItemBuilder
from salary_engine.calculators.types import (
    AssignmentSpec,
    CalcType,
    ComponentKind,
    ComponentRule,
    ComponentSpec,
    ComponentValue,
    FixedRule,
    FormulaRule,
    PercentageRule,
    StructureSpec,
)


def build_component_spec(
    component_id: str,
    name: str,
    kind: ComponentKind | str,
    calc_type: CalcType | str,
    defined_value: Decimal | None = None,
    percentage_of_component_id: str | None = None,
    formula: str | None = None,
    is_taxable: bool = True,
) -> ComponentSpec:
    """Turn a loosely typed component mapping into a ComponentSpec.

    Raises:
        StructureDefinitionError: If the fields do not form a valid rule
    """
    calc_type = CalcType(calc_type)
    kind = ComponentKind(kind)

    if percentage_of_component_id is not None and calc_type is not CalcType.PERCENTAGE:
        raise StructureDefinitionError(
            f"Component {component_id} is {calc_type.value} but declares a percentage base"
        )

    rule: ComponentRule
    if calc_type is CalcType.FIXED:
        rule = FixedRule(amount=defined_value)
    elif calc_type is CalcType.PERCENTAGE:
        if defined_value is None:
            raise StructureDefinitionError(
                f"Percentage component {component_id} has no rate"
            )
        rule = PercentageRule(rate=defined_value, base_component_id=percentage_of_component_id)
    else:
        rule = FormulaRule(expression=formula or "")

    return ComponentSpec(
        component_id=component_id,
        name=name,
        kind=kind,
        rule=rule,
        is_taxable=is_taxable,
    )


@dataclass(frozen=True)
class CompiledStructure:
    """A validated structure ready for repeated evaluation."""

    structure: StructureSpec
    order: tuple[ComponentSpec, ...]
    formulas: dict[str, Formula]  # component_id -> parsed formula


def _scope_names(spec: ComponentSpec) -> tuple[str, ...]:
    alias = identifier_for(spec.name)
    return (spec.name,) if alias == spec.name else (spec.name, alias)


def _check_names(structure: StructureSpec) -> None:
    owners: dict[str, str] = {}
    for spec in structure.components:
        for name in _scope_names(spec):
            if name == BASIC_SALARY:
                raise StructureDefinitionError(
                    f"Component {spec.component_id} shadows the reserved name {BASIC_SALARY}"
                )
            owner = owners.setdefault(name, spec.component_id)
            if owner != spec.component_id:
                raise StructureDefinitionError(
                    f"Components {owner} and {spec.component_id} are both named {name!r}"
                )


@lru_cache(maxsize=256)
def compile_structure(structure: StructureSpec) -> CompiledStructure:
    """Validate a structure and fix its evaluation order.

    Builds the dependency graph, sorts it, parses every formula and checks
    that each formula only names basicSalary or components earlier in the
    order. Component names and their aliases must be unique and may not
    shadow basicSalary. Cached per structure value, so an edited structure
    is revalidated.

    Raises:
        StructureDefinitionError: Or one of its subclasses
    """
    _check_names(structure)
    order = ComponentGraph.build(structure.components).evaluation_order()

    scope: set[str] = {BASIC_SALARY}
    formulas: dict[str, Formula] = {}
    for spec in order:
        if isinstance(spec.rule, FormulaRule):
            formula = Formula.parse(spec.rule.expression)
            formula.check_scope(scope)
            formulas[spec.component_id] = formula
        scope.update(_scope_names(spec))

    return CompiledStructure(structure=structure, order=tuple(order), formulas=formulas)


def validate_structure(structure: StructureSpec) -> list[ComponentSpec]:
    """Validate at save time; returns the evaluation order."""
    return list(compile_structure(structure).order)


class StructureEvaluator:
    """Computes every component's amount for one assignment.

    Pure: no I/O, no shared state beyond the compile cache.
    """

    def evaluate(
        self, structure: StructureSpec, assignment: AssignmentSpec
    ) -> list[ComponentValue]:
        """Evaluate components in topological order.

        - FIXED: assignment override, else mapping value, else zero
        - PERCENTAGE: base value (or basic salary) x rate
        - FORMULA: expression over basicSalary and earlier values
        """
        compiled = compile_structure(structure)
        basic = LineItemBuilder.round_to_cents(assignment.basic_salary)

        by_id: dict[str, Decimal] = {}
        scope: dict[str, Decimal] = {BASIC_SALARY: basic}
        values: list[ComponentValue] = []

        for spec in compiled.order:
            rule = spec.rule
            if isinstance(rule, FixedRule):
                override = assignment.overrides.get(spec.component_id)
                if override is not None:
                    raw = override
                elif rule.amount is not None:
                    raw = rule.amount
                else:
                    raw = Decimal("0")
            elif isinstance(rule, PercentageRule):
                if rule.base_component_id is None:
                    base = basic
                else:
                    base = by_id[rule.base_component_id]
                raw = base * rule.rate
            else:
                raw = compiled.formulas[spec.component_id].evaluate(scope)

            amount = LineItemBuilder.round_to_cents(raw)
            by_id[spec.component_id] = amount
            for name in _scope_names(spec):
                scope[name] = amount
            values.append(
                ComponentValue(
                    component_id=spec.component_id,
                    name=spec.name,
                    kind=spec.kind,
                    amount=amount,
                )
            )

        return values
