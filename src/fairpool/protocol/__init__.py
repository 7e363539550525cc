"""
fairpool/protocol/

Round engine: randomness, distribution, verification and lifecycle.
"""
