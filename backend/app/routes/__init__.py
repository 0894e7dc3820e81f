"""
PluginGate API Routes Package
"""
