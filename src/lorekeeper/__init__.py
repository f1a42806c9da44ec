"""lorekeeper - Resumable LLM knowledge-base builder for code repositories.

lorekeeper walks a repository through a fixed sequence of analysis steps,
asks an LLM to describe what it sees at each step, and accumulates the
answers in a local SQLite knowledge base. The final step consolidates the
knowledge base into a single document (README.ai.md by default).

Core principles:
- Resumable: every step is recorded in a durable ledger, an interrupted run
  continues after the last completed step
- Budgeted: evidence is packed into a fixed token budget, summarized or
  evicted by priority when it does not fit
- Provider Agnosticism: any LiteLLM-supported backend behind one interface
"""

__version__ = "0.1.0"
__author__ = "lorekeeper Contributors"
