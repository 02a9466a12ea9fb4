"""
Git layer — command runner and the ref store built on top of it.
"""
