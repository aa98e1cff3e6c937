"""
Data ingestion and processing modules for the stockframe pipeline.

Includes:
- alpaca_loader: Download paginated minute bars from the Alpaca API
- assembler: Stack per-ticker bars into the canonical FeatureTable
- cleaning: Timestamp parsing, minute-grid densification, null repair, session filter
- indicators: Technical indicator engine
- feature_builder: Per-symbol indicator computation over the FeatureTable
"""
