"""
actionscope

Discovery and security correlation of Next.js server actions in captured traffic.
"""
