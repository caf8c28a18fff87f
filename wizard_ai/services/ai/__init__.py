"""
AI orchestration services package.

Wraps every call to the remote generative model:

- The orchestrator decides between cache, remote call and fallback
- The remote client only talks HTTP and classifies failures
- Fallbacks are deterministic and never raise
"""
