from istream_abr.modules.analyzer.analyzer import DecisionAnalyzer

__all__ = ["DecisionAnalyzer"]
