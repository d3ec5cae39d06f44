"""Collection rule engine.

A rule is a closed tagged union on ``type``:

- ``cuisine`` / ``region``: match the foreign key already resolved on the
  collection (``cuisine_id`` / ``location_id``); the rule's string value is
  never looked up again at query time.
- ``scene`` / ``method`` / ``taste`` / ``crowd`` / ``occasion`` /
  ``ingredient``: match through the recipe-tag association after resolving
  slugs to tag ids. Extra ``dimensions`` are OR-combined with the primary one
  (a recipe matching any dimension is in).
- ``custom``: condition groups (AND between groups, ``logic`` inside a group)
  minus NOT-exclusions.

The collection's excluded ids are always subtracted from the compiled
predicate. Membership additionally unions the pinned ids back in.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import and_, or_, not_, select, true, false
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from recipe_engine.core.errors import ValidationError
from recipe_engine.models.recipe import Recipe, RecipeTag
from recipe_engine.models.taxonomy import Tag
from recipe_engine.repositories.taxonomy import TaxonomyRepository

logger = logging.getLogger(__name__)


class TagDimension(str, Enum):
    SCENE = "scene"
    METHOD = "method"
    TASTE = "taste"
    CROWD = "crowd"
    OCCASION = "occasion"
    INGREDIENT = "ingredient"


class RuleField(str, Enum):
    CUISINE_ID = "cuisineId"
    LOCATION_ID = "locationId"
    TAG_ID = "tagId"
    TAG = "tag"
    COOK_TIME = "cookTime"
    PREP_TIME = "prepTime"
    DIFFICULTY = "difficulty"
    SERVINGS = "servings"


class RuleOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    IN = "in"
    NIN = "nin"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"


RELATION_FIELDS = {RuleField.CUISINE_ID, RuleField.LOCATION_ID, RuleField.TAG_ID, RuleField.TAG}
RELATION_OPERATORS = {RuleOperator.EQ, RuleOperator.NEQ, RuleOperator.IN, RuleOperator.NIN}
NUMERIC_OPERATORS = {
    RuleOperator.EQ, RuleOperator.NEQ,
    RuleOperator.LT, RuleOperator.LTE, RuleOperator.GT, RuleOperator.GTE,
}

NUMERIC_COLUMNS = {
    RuleField.COOK_TIME: Recipe.cook_time,
    RuleField.PREP_TIME: Recipe.prep_time,
    RuleField.DIFFICULTY: Recipe.difficulty,
    RuleField.SERVINGS: Recipe.servings,
}

RuleValue = Union[str, List[str]]


# Rule variants

class _RuleModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CuisineRule(_RuleModel):
    type: Literal["cuisine"]
    value: str


class RegionRule(_RuleModel):
    type: Literal["region"]
    value: str


class TagRule(_RuleModel):
    type: Literal["scene", "method", "taste", "crowd", "occasion", "ingredient"]
    value: RuleValue
    # Additional dimensions, OR-combined with the primary one
    dimensions: Dict[TagDimension, RuleValue] = Field(default_factory=dict)

    def slugs_by_dimension(self) -> Dict[str, List[str]]:
        merged: Dict[str, List[str]] = {self.type: _as_list(self.value)}
        for dimension, value in self.dimensions.items():
            slugs = merged.setdefault(dimension.value, [])
            slugs.extend(s for s in _as_list(value) if s not in slugs)
        return merged


class RuleCondition(_RuleModel):
    field: RuleField
    operator: RuleOperator
    value: Union[int, float, str, List[str]]
    tag_type: Optional[TagDimension] = Field(default=None, alias="tagType")


class RuleGroup(_RuleModel):
    logic: Literal["AND", "OR"] = "AND"
    conditions: List[RuleCondition] = Field(default_factory=list)


class CustomRule(_RuleModel):
    type: Literal["custom"]
    groups: List[RuleGroup] = Field(default_factory=list)
    exclude: List[RuleCondition] = Field(default_factory=list)


RuleConfig = Annotated[
    Union[CuisineRule, RegionRule, TagRule, CustomRule],
    Field(discriminator="type"),
]

_rule_adapter: TypeAdapter = TypeAdapter(RuleConfig)

RULE_TYPES = ["cuisine", "region", "scene", "method", "taste", "crowd", "occasion", "ingredient", "custom"]


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if v not in (None, "")]
    return [str(value)] if value != "" else []


@dataclass
class RuleContext:
    """Resolved ids and curation lists a rule is compiled against."""

    cuisine_id: Optional[str] = None
    location_id: Optional[str] = None
    tag_id: Optional[str] = None
    pinned_ids: Sequence[str] = field(default_factory=list)
    excluded_ids: Sequence[str] = field(default_factory=list)

    @classmethod
    def for_collection(cls, collection) -> "RuleContext":
        return cls(
            cuisine_id=collection.cuisine_id,
            location_id=collection.location_id,
            tag_id=collection.tag_id,
            pinned_ids=list(collection.pinned_recipe_ids or []),
            excluded_ids=list(collection.excluded_recipe_ids or []),
        )


@dataclass
class RuleValidation:
    valid: bool
    errors: List[str]

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": self.errors}


# Parsing / validation (local, no store access)

def _format_pydantic_errors(exc: PydanticValidationError) -> List[str]:
    errors = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err["loc"])
        errors.append(f"{location}: {err['msg']}" if location else err["msg"])
    return errors


def _condition_errors(condition: RuleCondition) -> List[str]:
    errors = []
    if isinstance(condition.value, str) and not condition.value.strip():
        errors.append("value is required")
    if isinstance(condition.value, list) and not condition.value:
        errors.append("value must not be empty")
    if condition.field == RuleField.TAG and condition.tag_type is None:
        errors.append("tag conditions require tagType")
    if condition.field in RELATION_FIELDS and condition.operator not in RELATION_OPERATORS:
        errors.append(f"operator {condition.operator.value} is not supported for {condition.field.value}")
    if condition.field in NUMERIC_COLUMNS:
        if condition.operator not in NUMERIC_OPERATORS:
            errors.append(f"operator {condition.operator.value} is not supported for {condition.field.value}")
        elif _numeric(condition.value) is None:
            errors.append(f"{condition.field.value} needs a numeric value")
    return errors


def _semantic_errors(rule) -> List[str]:
    errors: List[str] = []
    if isinstance(rule, (CuisineRule, RegionRule)):
        if not rule.value.strip():
            errors.append("value is required")
    elif isinstance(rule, TagRule):
        if not _as_list(rule.value):
            errors.append("value is required")
    elif isinstance(rule, CustomRule):
        for i, group in enumerate(rule.groups, start=1):
            for j, condition in enumerate(group.conditions, start=1):
                errors.extend(f"group {i} condition {j}: {e}" for e in _condition_errors(condition))
        for i, condition in enumerate(rule.exclude, start=1):
            errors.extend(f"exclude {i}: {e}" for e in _condition_errors(condition))
    return errors


def validate_rule(data: Any) -> RuleValidation:
    """Check a raw rule: recognized type and required fields present.

    Does not check that referenced taxonomy entries exist.
    """
    if not isinstance(data, dict):
        return RuleValidation(False, ["rule must be an object"])
    if data.get("type") not in RULE_TYPES:
        return RuleValidation(False, [f"unknown rule type: {data.get('type')!r}"])

    try:
        rule = _rule_adapter.validate_python(data)
    except PydanticValidationError as e:
        return RuleValidation(False, _format_pydantic_errors(e))

    errors = _semantic_errors(rule)
    return RuleValidation(not errors, errors)


def parse_rule(data: Any):
    """Parse and validate a raw rule, raising ValidationError on failure."""
    result = validate_rule(data)
    if not result.valid:
        raise ValidationError("Invalid rule configuration", details={"errors": result.errors})
    return _rule_adapter.validate_python(data)


def dump_rule(rule) -> dict:
    return rule.model_dump(mode="json", by_alias=True, exclude_none=True)


# Description

_OPERATOR_LABELS = {
    RuleOperator.EQ: "=",
    RuleOperator.NEQ: "!=",
    RuleOperator.IN: "in",
    RuleOperator.NIN: "not in",
    RuleOperator.LT: "<",
    RuleOperator.LTE: "<=",
    RuleOperator.GT: ">",
    RuleOperator.GTE: ">=",
}


def _describe_condition(condition: RuleCondition) -> str:
    name = condition.field.value
    if condition.field == RuleField.TAG and condition.tag_type:
        name = f"tag[{condition.tag_type.value}]"
    value = ", ".join(condition.value) if isinstance(condition.value, list) else str(condition.value)
    return f"{name} {_OPERATOR_LABELS[condition.operator]} {value}"


def describe_rule(rule) -> str:
    """Human-readable summary of a parsed rule."""
    if isinstance(rule, CuisineRule):
        return f"Recipes of cuisine '{rule.value}'"
    if isinstance(rule, RegionRule):
        return f"Recipes from region '{rule.value}'"
    if isinstance(rule, TagRule):
        parts = [
            f"{dimension}={'|'.join(slugs)}"
            for dimension, slugs in rule.slugs_by_dimension().items()
        ]
        return "Recipes tagged " + " OR ".join(parts)
    if isinstance(rule, CustomRule):
        groups = [g for g in rule.groups if g.conditions]
        if not groups:
            desc = "No conditions (matches all recipes)"
        else:
            desc = " AND ".join(
                "(" + f" {g.logic} ".join(_describe_condition(c) for c in g.conditions) + ")"
                for g in groups
            )
        if rule.exclude:
            desc += " excluding " + ", ".join(_describe_condition(c) for c in rule.exclude)
        return desc
    return "Unknown rule"


# Compilation

def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _relation_clause(column, operator: RuleOperator, value: Any) -> Optional[ColumnElement]:
    values = _as_list(value)
    if not values:
        return None
    if operator == RuleOperator.EQ:
        return and_(column.is_not(None), column == values[0])
    if operator == RuleOperator.NEQ:
        return or_(column.is_(None), column != values[0])
    if operator == RuleOperator.IN:
        return and_(column.is_not(None), column.in_(values))
    if operator == RuleOperator.NIN:
        return or_(column.is_(None), column.not_in(values))
    return None


def _tag_clause(operator: RuleOperator, value: Any, tag_type: Optional[TagDimension]) -> Optional[ColumnElement]:
    values = _as_list(value)
    if not values:
        return None
    if operator in (RuleOperator.EQ, RuleOperator.NEQ):
        values = values[:1]

    if tag_type is not None:
        # Typed tag conditions accept ids or slugs within the dimension
        matching = (
            select(Tag.id)
            .where(Tag.type == tag_type.value)
            .where(or_(Tag.id.in_(values), Tag.slug.in_(values)))
        )
        has_tag = Recipe.tags.any(RecipeTag.tag_id.in_(matching))
    else:
        has_tag = Recipe.tags.any(RecipeTag.tag_id.in_(values))

    if operator in (RuleOperator.EQ, RuleOperator.IN):
        return has_tag
    if operator in (RuleOperator.NEQ, RuleOperator.NIN):
        return not_(has_tag)
    return None


def _numeric_clause(column, operator: RuleOperator, value: Any) -> Optional[ColumnElement]:
    number = _numeric(value)
    if number is None:
        return None
    comparisons = {
        RuleOperator.EQ: column == number,
        RuleOperator.LT: column < number,
        RuleOperator.LTE: column <= number,
        RuleOperator.GT: column > number,
        RuleOperator.GTE: column >= number,
    }
    if operator == RuleOperator.NEQ:
        return or_(column.is_(None), column != number)
    if operator in comparisons:
        return and_(column.is_not(None), comparisons[operator])
    return None


def condition_clause(condition: RuleCondition) -> Optional[ColumnElement]:
    """SQL clause for one custom condition, or None when it cannot apply."""
    if condition.field in (RuleField.TAG, RuleField.TAG_ID):
        return _tag_clause(condition.operator, condition.value, condition.tag_type)
    if condition.field == RuleField.CUISINE_ID:
        return _relation_clause(Recipe.cuisine_id, condition.operator, condition.value)
    if condition.field == RuleField.LOCATION_ID:
        return _relation_clause(Recipe.location_id, condition.operator, condition.value)
    if condition.field in NUMERIC_COLUMNS:
        return _numeric_clause(NUMERIC_COLUMNS[condition.field], condition.operator, condition.value)
    return None


def _custom_clause(rule: CustomRule) -> ColumnElement:
    group_clauses = []
    for group in rule.groups:
        clauses = [c for c in (condition_clause(cond) for cond in group.conditions) if c is not None]
        if not clauses:
            continue
        if len(clauses) == 1:
            group_clauses.append(clauses[0])
        elif group.logic == "OR":
            group_clauses.append(or_(*clauses))
        else:
            group_clauses.append(and_(*clauses))

    predicate = and_(*group_clauses) if group_clauses else true()

    excluded = [c for c in (condition_clause(cond) for cond in rule.exclude) if c is not None]
    if excluded:
        predicate = and_(predicate, not_(or_(*excluded)))
    return predicate


class RuleEngine:
    """Compiles rules into SQLAlchemy predicates over ``Recipe``."""

    def __init__(self, db: AsyncSession):
        self.taxonomy = TaxonomyRepository(db)

    validate = staticmethod(validate_rule)
    describe = staticmethod(describe_rule)

    async def compile(self, rule, context: RuleContext) -> ColumnElement:
        """Rule match minus the context's excluded ids."""
        if isinstance(rule, dict):
            rule = parse_rule(rule)

        predicate = await self._match_clause(rule, context)
        if context.excluded_ids:
            predicate = and_(predicate, Recipe.id.not_in(list(context.excluded_ids)))
        return predicate

    async def membership(self, rule, context: RuleContext) -> ColumnElement:
        """(rule match OR pinned) minus excluded."""
        if rule is None:
            predicate = false()
        else:
            if isinstance(rule, dict):
                rule = parse_rule(rule)
            predicate = await self._match_clause(rule, context)

        if context.pinned_ids:
            predicate = or_(predicate, Recipe.id.in_(list(context.pinned_ids)))
        if context.excluded_ids:
            predicate = and_(predicate, Recipe.id.not_in(list(context.excluded_ids)))
        return predicate

    async def _match_clause(self, rule, context: RuleContext) -> ColumnElement:
        if isinstance(rule, CuisineRule):
            if not context.cuisine_id:
                logger.warning("Cuisine rule '%s' has no resolved cuisine id; matching nothing", rule.value)
                return false()
            return Recipe.cuisine_id == context.cuisine_id

        if isinstance(rule, RegionRule):
            if not context.location_id:
                logger.warning("Region rule '%s' has no resolved location id; matching nothing", rule.value)
                return false()
            return Recipe.location_id == context.location_id

        if isinstance(rule, TagRule):
            return await self._tag_rule_clause(rule, context)

        if isinstance(rule, CustomRule):
            return _custom_clause(rule)

        raise ValidationError(f"Unsupported rule: {rule!r}")

    async def _tag_rule_clause(self, rule: TagRule, context: RuleContext) -> ColumnElement:
        clauses = []
        for dimension, slugs in rule.slugs_by_dimension().items():
            tag_ids = await self.taxonomy.tag_ids_for_slugs(dimension, slugs)
            if dimension == rule.type and context.tag_id and context.tag_id not in tag_ids:
                tag_ids.append(context.tag_id)
            if tag_ids:
                clauses.append(Recipe.tags.any(RecipeTag.tag_id.in_(tag_ids)))
            else:
                logger.info("No tags resolved for %s=%s", dimension, slugs)

        if not clauses:
            return false()
        return or_(*clauses)
