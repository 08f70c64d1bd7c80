"""
LLM integration layer.

Responsibilities:
- Manage Groq API configuration and credentials.
- Prompt the model for editorial taste signals about a venue.
- Validate the model's JSON before it reaches the pipeline.
"""
