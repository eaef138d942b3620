"""
ecanmesh — Economic Attention Bank and Mesh Coordinator

An ECAN-style attention economy (STI/LTI/VLTI values, a conserved
currency bank) that ranks and admits work, and a node mesh that routes
and load-balances the admitted work.
"""

__version__ = "0.1.0"
