"""
Knowledge Layer.

Loads the domain knowledge a plugin injects into its system prompt.
"""

from answerengine.knowledge.loader import KnowledgeSource, format_knowledge_for_prompt, load_knowledge

__all__ = ["KnowledgeSource", "format_knowledge_for_prompt", "load_knowledge"]
