"""
ecanmesh — Systems

  attention  the economic attention bank
  scheduler  priority- and attention-bounded task admission
  mesh       node topology, load balancing and the mesh coordinator
"""
