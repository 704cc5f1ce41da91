from app.services.sources.base import FetchResult, RawDataSource
from app.services.sources.samples import SampleStoreSource

__all__ = ["FetchResult", "RawDataSource", "SampleStoreSource"]
