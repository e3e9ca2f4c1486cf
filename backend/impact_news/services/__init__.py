"""
Services layer - core business logic for Impact News.

1. Classification (classification.py):
   - Keyword category scoring and tag extraction

2. Scoring (scoring.py):
   - User-agnostic quality score computed at ingestion

3. Ranking (ranking.py):
   - Personalized relevance overlay and deterministic ordering

4. Storage (storage.py):
   - Narrow async persistence interface over the SQLAlchemy models

5. Articles (articles.py):
   - Read-side operations behind the HTTP API

6. Data ingestion (data_ingestion/):
   - Circuit breaker, cache gate, deduplication, orchestrator, scheduler

Submodules are imported directly; source adapters depend on
data_ingestion.rate_limiter, so nothing is re-exported here.
"""
