from genesis.llm.client import GenerationClient, GenerationResult

__all__ = ["GenerationClient", "GenerationResult"]
