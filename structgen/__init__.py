"""structgen: schema-validated structured generation from language models.

  from structgen.llm import gen_object
  from structgen.rewriters.latex import fix_latex
"""

__version__ = "0.1.0"
