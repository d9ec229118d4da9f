"""
File loaders and writers for PLINK text formats and metabolite tables
"""
