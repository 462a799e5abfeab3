"""Session bridge service: state, fan-out, projections and the HTTP surface."""
