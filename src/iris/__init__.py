"""
IRIS: provider orchestration core.

Routes natural-language requests across local and remote LLM providers with
health tracking, circuit-breaker failover, semantic caching and threat
screening. Build a ready Orchestrator with iris.core.factories.build_orchestrator.
"""
