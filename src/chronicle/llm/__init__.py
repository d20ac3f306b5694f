"""
LLM module - external generator and summarizer collaborators.

Components:
- base: provider interface shared by generator implementations
- claude: Anthropic Claude API provider
- summarizer: prose summarization on top of a provider
- generation: cache-wrapped generation
"""
