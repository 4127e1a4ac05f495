from mangarec.services.sources.base import CandidateSource, HistoryStore, PreferencesStore


def get_catalog_source() -> CandidateSource:
    from mangarec.services.sources.sql import SqlCatalogSource

    return SqlCatalogSource()


def get_history_store() -> HistoryStore:
    from mangarec.services.sources.sql import SqlHistoryStore

    return SqlHistoryStore()


def get_preferences_store() -> PreferencesStore:
    from mangarec.services.sources.sql import SqlPreferencesStore

    return SqlPreferencesStore()
