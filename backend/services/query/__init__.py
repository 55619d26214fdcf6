from .aggregate import aggregate, aggregate_paginate, build_page_pipeline, compile_pipeline
from .filters import compile_filter, table_column_resolver
from .options import (
    DEFAULT_SORT,
    PaginateOptions,
    PaginateResult,
    PopulateOption,
    parse_paginate_options,
    parse_select,
    parse_sort,
)
from .paginate import paginate
from .pipeline import Count, Limit, Lookup, Match, Pipeline, Project, Skip, Sort, Stage, Unwind
from .references import (
    COLLECTION_ALIASES,
    collection_for_field,
    register_collection_alias,
    resolve_collection,
)

__all__ = [
    "COLLECTION_ALIASES",
    "DEFAULT_SORT",
    "Count",
    "Limit",
    "Lookup",
    "Match",
    "PaginateOptions",
    "PaginateResult",
    "Pipeline",
    "PopulateOption",
    "Project",
    "Skip",
    "Sort",
    "Stage",
    "Unwind",
    "aggregate",
    "aggregate_paginate",
    "build_page_pipeline",
    "collection_for_field",
    "compile_filter",
    "compile_pipeline",
    "paginate",
    "parse_paginate_options",
    "parse_select",
    "parse_sort",
    "register_collection_alias",
    "resolve_collection",
    "table_column_resolver",
]
