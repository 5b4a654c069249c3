"""YAML catalog loader and dimension registry.

catalogs are the single source of truth for which dimensions exist, what
sql each one renders to, and which joins it drags in. every expression is
parsed with sqlglot at load time - anything in a catalog ends up
interpolated into sql, so a bad one should fail here and not in the
middle of a request.
"""

import logging
from pathlib import Path

import sqlglot
import yaml
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from drillforge.errors import CatalogError, UnknownDimensionError
from drillforge.models.catalog import BASE_TOKEN, Dimension, Metric, Report

logger = logging.getLogger(__name__)

BUILTIN_CATALOG_DIR = Path(__file__).resolve().parent.parent / "catalogs"

# a catalog expression must be a scalar expression, never a statement
_STATEMENT_NODES = (
    exp.Query,
    exp.Insert,
    exp.Update,
    exp.Delete,
    exp.Create,
    exp.Drop,
    exp.Command,
)


class DimensionRegistry:
    """Dimension lookup for a single report.

    three lookups that differ only in their error message, because callers
    want to know *where* the bad id came from.
    """

    def __init__(self, report: Report) -> None:
        self.report = report
        self._dimensions: dict[str, Dimension] = {d.id: d for d in report.dimensions}

    def __contains__(self, dimension_id: str) -> bool:
        return dimension_id in self._dimensions

    def __iter__(self):
        return iter(self._dimensions.values())

    def __len__(self) -> int:
        return len(self._dimensions)

    def resolve(self, dimension_id: str) -> Dimension:
        dimension = self._dimensions.get(dimension_id)
        if dimension is None:
            raise UnknownDimensionError(f"Unknown dimension: {dimension_id}")
        return dimension

    def resolve_parent(self, dimension_id: str) -> Dimension:
        dimension = self._dimensions.get(dimension_id)
        if dimension is None:
            raise UnknownDimensionError(f"Unknown dimension in parent filter: {dimension_id}")
        return dimension

    def resolve_filter(self, dimension_id: str) -> Dimension:
        dimension = self._dimensions.get(dimension_id)
        if dimension is None:
            raise UnknownDimensionError(f"Unknown dimension in table filter: {dimension_id}")
        return dimension

    def metric(self, metric_id: str | None) -> Metric | None:
        if metric_id is None:
            return None
        return self.report.get_metric(metric_id)


class ReportRegistry:
    """All loaded reports, keyed by name.

    built-in catalogs ship with the package. load_directory layers extra
    ones on top - a name clash is an error rather than a silent override.
    """

    def __init__(self) -> None:
        self.reports: dict[str, Report] = {}
        self._registries: dict[str, DimensionRegistry] = {}

    @classmethod
    def builtin(cls) -> "ReportRegistry":
        registry = cls()
        registry.load_directory(BUILTIN_CATALOG_DIR)
        return registry

    def load_directory(self, path: Path) -> None:
        """Load every yaml/yml file under a directory."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Catalog directory not found: {path}")

        yaml_files = sorted(path.glob("**/*.yaml")) + sorted(path.glob("**/*.yml"))
        if not yaml_files:
            raise ValueError(f"No YAML files found in {path}")

        for yaml_file in yaml_files:
            self._load_file(yaml_file)

        logger.debug("loaded %d report(s) from %s", len(self.reports), path)

    def _load_file(self, path: Path) -> None:
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            return

        for report_data in data.get("reports", []):
            report = Report.model_validate(report_data)
            if report.name in self.reports:
                raise CatalogError(f"Duplicate report: {report.name}")
            self._validate_report(report)
            self.reports[report.name] = report
            self._registries[report.name] = DimensionRegistry(report)
            logger.debug(
                "registered report %s (%d dimensions, %d metrics)",
                report.name,
                len(report.dimensions),
                len(report.metrics),
            )

    def _validate_report(self, report: Report) -> None:
        """Reject duplicate ids, a dangling default sort and unparseable sql."""
        seen: set[str] = set()
        for dimension in report.dimensions:
            if dimension.id in seen:
                raise CatalogError(
                    f"Duplicate dimension '{dimension.id}' in report '{report.name}'"
                )
            seen.add(dimension.id)

        metric_ids: set[str] = set()
        for metric in report.metrics:
            if metric.id in metric_ids:
                raise CatalogError(f"Duplicate metric '{metric.id}' in report '{report.name}'")
            metric_ids.add(metric.id)

        if report.default_sort not in metric_ids:
            raise CatalogError(
                f"Report '{report.name}' default_sort '{report.default_sort}' is not a metric"
            )

        dialect = report.dialect.sqlglot_name
        for metric in report.metrics:
            _check_expression(metric.expr, dialect, f"{report.name}.{metric.id}")
        for dimension in report.dimensions:
            for expr in dimension.expressions():
                _check_expression(expr, dialect, f"{report.name}.{dimension.id}")
        for join in [*report.base_joins, *(j for d in report.dimensions for j in d.joins)]:
            _check_join(join.sql, dialect, f"{report.name} join '{join.alias}'")

    # --- lookup methods ---

    def get_report(self, name: str) -> Report:
        if name not in self.reports:
            raise KeyError(f"Unknown report: {name}")
        return self.reports[name]

    def dimensions(self, report_name: str) -> DimensionRegistry:
        if report_name not in self._registries:
            raise KeyError(f"Unknown report: {report_name}")
        return self._registries[report_name]


def _render_for_check(sql: str) -> str:
    return sql.replace(BASE_TOKEN, "t.")


def _check_expression(sql: str, dialect: str, where: str) -> None:
    if ";" in sql:
        raise CatalogError(f"{where}: expression must not contain ';'")
    try:
        parsed = sqlglot.parse_one(_render_for_check(sql), read=dialect)
    except (ParseError, TokenError) as e:
        raise CatalogError(f"{where}: invalid expression {sql!r}: {e}") from e
    if isinstance(parsed, _STATEMENT_NODES):
        raise CatalogError(f"{where}: expected an expression, got a statement: {sql!r}")


def _check_join(sql: str, dialect: str, where: str) -> None:
    if ";" in sql:
        raise CatalogError(f"{where}: join must not contain ';'")
    # joins are only meaningful attached to a FROM, so parse them as one
    wrapped = f"SELECT 1 FROM base_table t {_render_for_check(sql)}"
    try:
        parsed = sqlglot.parse_one(wrapped, read=dialect)
    except (ParseError, TokenError) as e:
        raise CatalogError(f"{where}: invalid join {sql!r}: {e}") from e
    if not isinstance(parsed, exp.Select) or not parsed.args.get("joins"):
        raise CatalogError(f"{where}: not a join clause: {sql!r}")
