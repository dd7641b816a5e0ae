"""
FlowInvest core: prompt construction, model-output extraction and sanitization.
"""
