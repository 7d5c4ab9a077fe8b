"""
AI pipeline: mine history patterns → build prompt → generate with provider
fallback → extract and normalize the structured answer.
"""
from app.pipeline.extractor import (  # noqa: F401
    MalformedModelOutput,
    extract_json_array,
    extract_json_object,
    normalize_time,
    normalize_transactions,
)
from app.pipeline.generator import (  # noqa: F401
    FallbackGenerator,
    GenerationError,
    GenerationFailed,
    GeneratorConfig,
    ProviderCallResult,
    ProviderUnconfigured,
    describe_failure,
)
from app.pipeline.patterns import mine_patterns  # noqa: F401
from app.pipeline.providers import ErrorKind, Modality, Provider, ProviderCallError  # noqa: F401
