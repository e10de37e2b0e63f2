"""
Process bridge: worker supervision, line framing, JSON codec and the
single-flight request channel.
"""
