"""Domain layer for crawlscope.

Records, categories and header helpers shared by the classifier and the
ingestion pipeline. Framework-agnostic: nothing here imports Flask.
"""
