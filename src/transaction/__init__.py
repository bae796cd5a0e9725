"""Transaction engine for atomic apply.

Builds a backed-up plan from desired objects, applies it in manifest
order, waits for every resource to converge, and rolls the whole plan
back if any stage fails.
"""
