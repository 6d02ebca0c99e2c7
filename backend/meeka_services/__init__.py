from .completion import CompletionError, CompletionProvider, CompletionService, provider_candidates
from .geolocation import country_lookup, lookup_country_code
from .rest_store import RestRecordStore, build_record_store

__all__ = [
    "CompletionError",
    "CompletionProvider",
    "CompletionService",
    "RestRecordStore",
    "build_record_store",
    "country_lookup",
    "lookup_country_code",
    "provider_candidates",
]
