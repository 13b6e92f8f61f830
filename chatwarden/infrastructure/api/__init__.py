"""Chat platform API adapters.

Bounded Context: Platform Access
"""
