"""Service layer: ranking, pipeline, freshness engine and dataset wiring"""
