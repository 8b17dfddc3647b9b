"""
Render and deliver pipeline driven by the job workers.
"""
