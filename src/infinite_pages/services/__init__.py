"""Business services: credits, stories, billing, creators and maintenance"""
