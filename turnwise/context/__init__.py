"""Conversation context for turnwise.

Provides:
- FileConversationStore: append-only, optionally encrypted, one envelope file per message
- LastNContextProvider / StaticSystemPromptProvider: pluggable context sources
- PromptBuilder: assembles a Prompt from those sources and the live utterance
- rendering: Prompt -> chat messages, transcript text, JSON payload
"""
