"""
grading_config.py — Institution grading and achievement configuration.

Configuration is read-only to the engine. It arrives as plain dicts (from the
config store or an API payload) and is parsed into frozen dataclasses:

  GradingConfig      scale, dimension/period weights, strategies, recovery
                     and promotion thresholds, optional subject areas
  AchievementConfig  achievements per period, value-judgment switches,
                     report display options, judgment templates
  TemplateMap        (institution, level) -> judgment text, resolved once
                     per batch

Weight sets are validated here; a set that does not sum to exactly 100 is a
ConfigInvariantViolation and blocks computation for the institution.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from core.errors import ConfigInvariantViolation
from core.numeric import to_decimal


HUNDRED = Decimal(100)


class PeriodCalculationMode(str, Enum):
    WEIGHTED_DIMENSIONS = "WEIGHTED_DIMENSIONS"
    SUM_ACTIVITIES = "SUM_ACTIVITIES"


class AnnualCalculationMode(str, Enum):
    WEIGHTED_PERIODS = "WEIGHTED_PERIODS"
    SIMPLE_AVERAGE = "SIMPLE_AVERAGE"


class RecoveryImpact(str, Enum):
    REPLACE_IF_HIGHER = "REPLACE_IF_HIGHER"
    ADJUST_TO_MINIMUM = "ADJUST_TO_MINIMUM"
    AVERAGE_WITH_ORIGINAL = "AVERAGE_WITH_ORIGINAL"
    QUALITATIVE_ONLY = "QUALITATIVE_ONLY"


class DisplayFormat(str, Enum):
    LIST = "LIST"
    PARAGRAPH = "PARAGRAPH"


class JudgmentPosition(str, Enum):
    END_OF_EACH = "END_OF_EACH"
    END_OF_ALL = "END_OF_ALL"
    NONE = "NONE"


class AreaCalculationType(str, Enum):
    AVERAGE = "AVERAGE"
    WEIGHTED = "WEIGHTED"
    DOMINANT = "DOMINANT"


class AreaApprovalRule(str, Enum):
    AREA_AVERAGE = "AREA_AVERAGE"
    ALL_SUBJECTS = "ALL_SUBJECTS"
    DOMINANT_SUBJECT = "DOMINANT_SUBJECT"


class AreaRecoveryRule(str, Enum):
    INDIVIDUAL_SUBJECT = "INDIVIDUAL_SUBJECT"
    FULL_AREA = "FULL_AREA"
    CONDITIONAL = "CONDITIONAL"
    NONE = "NONE"


# Performance level codes used by the achievement text rules.
BAJO = "BAJO"
BASICO = "BASICO"
ALTO = "ALTO"
SUPERIOR = "SUPERIOR"
PERFORMANCE_LEVELS = (BAJO, BASICO, ALTO, SUPERIOR)


@dataclass(frozen=True)
class ScaleBand:
    level: str
    min_score: Decimal
    max_score: Decimal
    label: str = ""

    @property
    def display_label(self) -> str:
        return self.label or self.level.title()


@dataclass(frozen=True)
class AreaSubject:
    subject_id: str
    weight: Decimal = Decimal(1)
    is_dominant: bool = False


@dataclass(frozen=True)
class Area:
    """A group of subjects that is graded, approved and counted as one unit."""
    id: str
    name: str
    subjects: Tuple[AreaSubject, ...] = ()

    @property
    def subject_ids(self) -> Tuple[str, ...]:
        return tuple(s.subject_id for s in self.subjects)

    @property
    def dominant_subject_id(self) -> Optional[str]:
        return next((s.subject_id for s in self.subjects if s.is_dominant), None)


@dataclass(frozen=True)
class AreaRules:
    calculation_type: AreaCalculationType = AreaCalculationType.WEIGHTED
    approval_rule: AreaApprovalRule = AreaApprovalRule.AREA_AVERAGE
    recovery_rule: AreaRecoveryRule = AreaRecoveryRule.INDIVIDUAL_SUBJECT
    fail_if_any_subject_fails: bool = False
    generate_alerts: bool = True


@dataclass(frozen=True)
class GradingConfig:
    institution_id: str
    scale: Tuple[ScaleBand, ...]
    dimension_weights: Mapping[str, Decimal] = field(default_factory=dict)
    period_calculation_mode: PeriodCalculationMode = PeriodCalculationMode.WEIGHTED_DIMENSIONS
    annual_calculation_mode: AnnualCalculationMode = AnnualCalculationMode.WEIGHTED_PERIODS
    period_weights: Tuple[Decimal, ...] = ()
    decimal_places: int = 2
    min_passing_score: Decimal = Decimal("3.0")
    include_recovery: bool = True
    max_recovery_score: Decimal = Decimal("3.0")
    recovery_impact: RecoveryImpact = RecoveryImpact.REPLACE_IF_HIGHER
    max_failed_areas: int = 2
    min_attendance: Decimal = Decimal("75")
    conditional_max_failed_areas: Optional[int] = None
    area_rules: AreaRules = field(default_factory=AreaRules)
    areas: Tuple[Area, ...] = ()

    @property
    def min_possible(self) -> Decimal:
        return min(b.min_score for b in self.scale)

    @property
    def max_possible(self) -> Decimal:
        return max(b.max_score for b in self.scale)

    def period_weight(self, period_order: int) -> Optional[Decimal]:
        """Weight of the 1-based period, or None when not declared."""
        if 1 <= period_order <= len(self.period_weights):
            return self.period_weights[period_order - 1]
        return None


@dataclass(frozen=True)
class JudgmentTemplate:
    level: str
    template: str
    is_active: bool = True


@dataclass(frozen=True)
class AchievementConfig:
    institution_id: str
    achievements_per_period: int = 1
    use_promotional_achievement: bool = True
    use_value_judgments: bool = True
    display_format: DisplayFormat = DisplayFormat.LIST
    judgment_position: JudgmentPosition = JudgmentPosition.END_OF_EACH
    templates: Tuple[JudgmentTemplate, ...] = ()


DEFAULT_SCALE: Tuple[ScaleBand, ...] = (
    ScaleBand(SUPERIOR, Decimal("4.6"), Decimal("5.0"), "Superior"),
    ScaleBand(ALTO, Decimal("4.0"), Decimal("4.5"), "Alto"),
    ScaleBand(BASICO, Decimal("3.0"), Decimal("3.9"), "Básico"),
    ScaleBand(BAJO, Decimal("1.0"), Decimal("2.9"), "Bajo"),
)

DEFAULT_JUDGMENT_TEMPLATES: Tuple[JudgmentTemplate, ...] = (
    JudgmentTemplate(BAJO, "Se recomienda reforzar los procesos de aprendizaje con acompañamiento constante."),
    JudgmentTemplate(BASICO, "Debe continuar fortaleciendo sus habilidades para consolidar los aprendizajes."),
    JudgmentTemplate(ALTO, "Demuestra un buen dominio de las competencias y mantiene un desempeño consistente."),
    JudgmentTemplate(SUPERIOR, "Demuestra compromiso, autonomía y excelencia en su proceso de aprendizaje."),
)


class TemplateMap:
    """
    Immutable (institution, level) -> judgment text lookup.

    Built once per batch from the institution's active templates and passed
    around as a value, so suggestion generation never goes back to the store.
    """

    def __init__(self, entries: Optional[Dict[Tuple[str, str], str]] = None):
        self._entries = MappingProxyType(dict(entries or {}))

    @classmethod
    def from_config(cls, config: AchievementConfig) -> "TemplateMap":
        entries = {
            (config.institution_id, t.level): t.template
            for t in config.templates
            if t.is_active
        }
        return cls(entries)

    def judgment_for(self, institution_id: str, level: str) -> str:
        return self._entries.get((institution_id, level), "")

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other) -> bool:
        return isinstance(other, TemplateMap) and dict(self._entries) == dict(other._entries)


# ── Validation ──────────────────────────────────────────────────────

def _check_weight_set(name: str, weights: List[Decimal], institution_id: str) -> None:
    if any(w < 0 for w in weights):
        raise ConfigInvariantViolation(
            f"{name} contains a negative weight", {"institution_id": institution_id}
        )
    total = sum(weights, Decimal(0))
    if total != HUNDRED:
        raise ConfigInvariantViolation(
            f"{name} must sum to 100, got {total}", {"institution_id": institution_id}
        )


def _validate_areas(areas: Tuple[Area, ...], key: Dict[str, Any]) -> None:
    seen: Dict[str, str] = {}
    for area in areas:
        if not area.subjects:
            raise ConfigInvariantViolation(f"Area {area.id} has no subjects", {**key, "area_id": area.id})
        if sum(1 for s in area.subjects if s.is_dominant) > 1:
            raise ConfigInvariantViolation(
                f"Area {area.id} has more than one dominant subject", {**key, "area_id": area.id}
            )
        if sum((s.weight for s in area.subjects), Decimal(0)) == 0:
            raise ConfigInvariantViolation(f"Area {area.id} has zero total weight", {**key, "area_id": area.id})
        for s in area.subjects:
            if s.weight < 0:
                raise ConfigInvariantViolation(
                    f"Subject {s.subject_id} has a negative area weight", {**key, "area_id": area.id}
                )
            if s.subject_id in seen:
                raise ConfigInvariantViolation(
                    f"Subject {s.subject_id} belongs to areas {seen[s.subject_id]} and {area.id}",
                    {**key, "area_id": area.id},
                )
            seen[s.subject_id] = area.id


def validate_grading_config(config: GradingConfig) -> GradingConfig:
    """Raise ConfigInvariantViolation if the config cannot be computed with."""
    key = {"institution_id": config.institution_id}
    if not config.scale:
        raise ConfigInvariantViolation("Grading scale is empty", key)

    bands = sorted(config.scale, key=lambda b: b.min_score)
    for band in bands:
        if band.min_score > band.max_score:
            raise ConfigInvariantViolation(
                f"Scale band {band.level} has minScore above maxScore", key
            )
    for lower, upper in zip(bands, bands[1:]):
        if upper.min_score <= lower.max_score:
            raise ConfigInvariantViolation(
                f"Scale bands {lower.level} and {upper.level} overlap", key
            )

    if config.period_calculation_mode == PeriodCalculationMode.WEIGHTED_DIMENSIONS:
        if not config.dimension_weights:
            raise ConfigInvariantViolation("Dimension weights are not configured", key)
        _check_weight_set("Dimension weights", list(config.dimension_weights.values()), config.institution_id)

    if config.annual_calculation_mode == AnnualCalculationMode.WEIGHTED_PERIODS:
        if not config.period_weights:
            raise ConfigInvariantViolation("Period weights are not configured", key)
        _check_weight_set("Period weights", list(config.period_weights), config.institution_id)

    if config.decimal_places < 0:
        raise ConfigInvariantViolation("decimalPlaces cannot be negative", key)

    if (
        config.conditional_max_failed_areas is not None
        and config.conditional_max_failed_areas < config.max_failed_areas
    ):
        raise ConfigInvariantViolation(
            "conditionalMaxFailedAreas cannot be below maxFailedAreas", key
        )
    _validate_areas(config.areas, key)
    return config


# ── Parsing ─────────────────────────────────────────────────────────

def _pick(data: Mapping[str, Any], aliases: List[str], default: Any = None) -> Any:
    """Return the first present key among camelCase/snake_case aliases."""
    for a in aliases:
        if a in data and data[a] is not None:
            return data[a]
    return default


def _required_decimal(value: Any, what: str, institution_id: str) -> Decimal:
    d = to_decimal(value)
    if d is None:
        raise ConfigInvariantViolation(
            f"{what} is not a number: {value!r}", {"institution_id": institution_id}
        )
    return d


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _parse_scale(raw: Any, institution_id: str) -> Tuple[ScaleBand, ...]:
    if not raw:
        return DEFAULT_SCALE
    bands = []
    for entry in raw:
        level = str(_pick(entry, ["level", "code", "name"], "")).strip().upper()
        bands.append(
            ScaleBand(
                level=level,
                min_score=_required_decimal(_pick(entry, ["minScore", "min_score", "min"]), f"{level} minScore", institution_id),
                max_score=_required_decimal(_pick(entry, ["maxScore", "max_score", "max"]), f"{level} maxScore", institution_id),
                label=str(_pick(entry, ["label", "description"], "")),
            )
        )
    return tuple(bands)


def _parse_area_rules(raw: Any, institution_id: str) -> AreaRules:
    if not raw:
        return AreaRules()
    try:
        return AreaRules(
            calculation_type=AreaCalculationType(
                _pick(raw, ["calculationType", "calculation_type"], AreaCalculationType.WEIGHTED.value)
            ),
            approval_rule=AreaApprovalRule(
                _pick(raw, ["approvalRule", "approval_rule"], AreaApprovalRule.AREA_AVERAGE.value)
            ),
            recovery_rule=AreaRecoveryRule(
                _pick(raw, ["recoveryRule", "recovery_rule"], AreaRecoveryRule.INDIVIDUAL_SUBJECT.value)
            ),
            fail_if_any_subject_fails=_as_bool(_pick(raw, ["failIfAnySubjectFails", "fail_if_any_subject_fails"], False)),
            generate_alerts=_as_bool(_pick(raw, ["generateAlerts", "generate_alerts"], True)),
        )
    except ValueError as exc:
        raise ConfigInvariantViolation(str(exc), {"institution_id": institution_id}) from exc


def _parse_areas(raw: Any, institution_id: str) -> Tuple[Area, ...]:
    areas = []
    for entry in raw or []:
        area_id = str(_pick(entry, ["id", "areaId", "area_id"], ""))
        subjects = tuple(
            AreaSubject(
                subject_id=str(_pick(s, ["subjectId", "subject_id", "id"], "")),
                weight=_required_decimal(_pick(s, ["weight", "weightPercentage"], 1), f"{area_id} subject weight", institution_id),
                is_dominant=_as_bool(_pick(s, ["isDominant", "is_dominant"], False)),
            )
            for s in _pick(entry, ["subjects"], []) or []
        )
        areas.append(Area(id=area_id, name=str(_pick(entry, ["name"], area_id)), subjects=subjects))
    return tuple(areas)


def grading_config_from_dict(data: Mapping[str, Any], institution_id: Optional[str] = None) -> GradingConfig:
    """Parse and validate a grading config payload."""
    inst = str(institution_id or _pick(data, ["institutionId", "institution_id"], ""))

    raw_dims = _pick(data, ["dimensionWeights", "dimension_weights"], {}) or {}
    dimension_weights = {
        str(dim): _required_decimal(w, f"weight for {dim}", inst) for dim, w in raw_dims.items()
    }
    raw_periods = _pick(data, ["periodWeights", "period_weights"], []) or []
    period_weights = tuple(_required_decimal(w, "period weight", inst) for w in raw_periods)

    try:
        period_mode = PeriodCalculationMode(
            _pick(data, ["periodCalculationMode", "period_calculation_mode"], PeriodCalculationMode.WEIGHTED_DIMENSIONS.value)
        )
        annual_mode = AnnualCalculationMode(
            _pick(data, ["annualCalculationMode", "annual_calculation_mode"], AnnualCalculationMode.WEIGHTED_PERIODS.value)
        )
        impact = RecoveryImpact(
            _pick(data, ["recoveryImpact", "recovery_impact", "periodImpactType"], RecoveryImpact.REPLACE_IF_HIGHER.value)
        )
    except ValueError as exc:
        raise ConfigInvariantViolation(str(exc), {"institution_id": inst}) from exc

    conditional = _pick(data, ["conditionalMaxFailedAreas", "conditional_max_failed_areas"])

    config = GradingConfig(
        institution_id=inst,
        scale=_parse_scale(_pick(data, ["scale", "performanceScale", "performance_scale"]), inst),
        dimension_weights=MappingProxyType(dimension_weights),
        period_calculation_mode=period_mode,
        annual_calculation_mode=annual_mode,
        period_weights=period_weights,
        decimal_places=int(_pick(data, ["decimalPlaces", "decimal_places"], os.getenv("DECIMAL_PLACES", "2"))),
        min_passing_score=_required_decimal(_pick(data, ["minPassingScore", "min_passing_score"], "3.0"), "minPassingScore", inst),
        include_recovery=_as_bool(_pick(data, ["includeRecovery", "include_recovery"], True)),
        max_recovery_score=_required_decimal(_pick(data, ["maxRecoveryScore", "max_recovery_score", "periodMaxScore"], "3.0"), "maxRecoveryScore", inst),
        recovery_impact=impact,
        max_failed_areas=int(_pick(data, ["maxFailedAreas", "max_failed_areas"], 2)),
        min_attendance=_required_decimal(_pick(data, ["minAttendance", "min_attendance"], "75"), "minAttendance", inst),
        conditional_max_failed_areas=int(conditional) if conditional is not None else None,
        area_rules=_parse_area_rules(_pick(data, ["areaConfig", "area_config", "areaRules", "area_rules"]), inst),
        areas=_parse_areas(_pick(data, ["areas"]), inst),
    )
    return validate_grading_config(config)


def achievement_config_from_dict(data: Mapping[str, Any], institution_id: Optional[str] = None) -> AchievementConfig:
    inst = str(institution_id or _pick(data, ["institutionId", "institution_id"], ""))
    raw_templates = _pick(data, ["valueJudgmentTemplates", "templates", "value_judgment_templates"])
    if raw_templates is None:
        templates = DEFAULT_JUDGMENT_TEMPLATES
    else:
        templates = tuple(
            JudgmentTemplate(
                level=str(_pick(t, ["level"], "")).strip().upper(),
                template=str(_pick(t, ["template", "text"], "")),
                is_active=_as_bool(_pick(t, ["isActive", "is_active"], True)),
            )
            for t in raw_templates
        )
    try:
        display_format = DisplayFormat(_pick(data, ["displayFormat", "display_format"], DisplayFormat.LIST.value))
        judgment_position = JudgmentPosition(
            _pick(data, ["judgmentPosition", "judgment_position"], JudgmentPosition.END_OF_EACH.value)
        )
    except ValueError as exc:
        raise ConfigInvariantViolation(str(exc), {"institution_id": inst}) from exc

    return AchievementConfig(
        institution_id=inst,
        achievements_per_period=int(_pick(data, ["achievementsPerPeriod", "achievements_per_period"], 1)),
        use_promotional_achievement=_as_bool(_pick(data, ["usePromotionalAchievement", "use_promotional_achievement"], True)),
        use_value_judgments=_as_bool(_pick(data, ["useValueJudgments", "use_value_judgments"], True)),
        display_format=display_format,
        judgment_position=judgment_position,
        templates=templates,
    )
