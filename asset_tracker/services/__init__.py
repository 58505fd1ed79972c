"""
Services: store adapters and the lifecycle engine
"""
