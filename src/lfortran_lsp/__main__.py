from lfortran_lsp.cli import app

if __name__ == "__main__":  # pragma: no cover
    app(prog_name="lfortran-lsp")  # pragma: no cover
