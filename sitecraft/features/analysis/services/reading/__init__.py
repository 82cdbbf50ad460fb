from sitecraft.features.analysis.services.reading.analysis_reader import AnalysisReader

__all__ = ["AnalysisReader"]
