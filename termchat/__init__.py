"""
termchat - Multi-provider terminal chat client

Talks to Google Gemini, Anthropic and OpenAI over HTTP and renders
streamed responses incrementally through one normalized delta stream.
"""

__version__ = "0.3.0"
__author__ = "termchat"
