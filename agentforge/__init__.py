"""
agentforge Application Package

This package contains the agent specification builder:
- documents: Typed agent documents and the merge / deletion engine
- builder: Phase pipeline, progress tracking, resume and deadline handling
- generation: Generator collaborators (OpenAI) and fragment sanitizing
- persistence: Document store gateways and checkpoint writes
- api: FastAPI surface for submitting and inspecting builds
- worker: Celery tasks running builds in the background
- tests: Test suites
"""
