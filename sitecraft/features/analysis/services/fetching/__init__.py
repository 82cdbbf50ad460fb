from sitecraft.features.analysis.services.fetching.fetcher import PageFetcher, build_driver

__all__ = ["PageFetcher", "build_driver"]
