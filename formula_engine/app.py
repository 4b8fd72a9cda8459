"""
Formula Engine Web Interface
FastAPI application for browsing a tap and its installed kegs (read-only)
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, HTMLResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from typing import Optional
import logging
import os

logger = logging.getLogger(__name__)

from formula_engine_core import Cellar, FormulaError, Tap, validate_formula
from formula_engine import __version__ as ENGINE_VERSION, env_paths

app = FastAPI(title="Formula Engine")

# Tap and cellar locations, set via FORMULA_TAP / FORMULA_PREFIX or
# _set_paths_for_testing()
FORMULA_TAP, FORMULA_PREFIX, _ = env_paths()


def _set_paths_for_testing(tap_path, prefix_path):
    """Point the app at a different tap and cellar (for testing)."""
    global FORMULA_TAP, FORMULA_PREFIX
    FORMULA_TAP = os.fspath(tap_path)
    FORMULA_PREFIX = os.fspath(prefix_path)


def get_tap():
    return Tap(FORMULA_TAP)


def get_cellar():
    return Cellar(FORMULA_PREFIX)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type"],
)

templates = Jinja2Templates(directory=os.path.join(os.path.dirname(__file__), "templates"))


# ---------------------------------------------------------------------------
# Pydantic response models
# ---------------------------------------------------------------------------

class FormulaSummary(BaseModel):
    name: str
    version: str
    description: str
    homepage: str
    installed_version: Optional[str] = None

class InstallStepItem(BaseModel):
    name: str
    argv: list[str]

class FormulaDetail(BaseModel):
    name: str
    version: str
    description: str
    homepage: str
    source_url: str
    checksum: str
    checksum_algorithm: str
    build_dependencies: list[str]
    runtime_dependencies: list[str]
    install_steps: list[InstallStepItem]
    installed_version: Optional[str] = None

class ValidationResponse(BaseModel):
    name: str
    valid: bool
    errors: list[str]
    warnings: list[str]

class InstalledItem(BaseModel):
    name: str
    version: str
    path: str

class ErrorResponse(BaseModel):
    error: str


def _load_or_404(name):
    """Return (formula, None) or (None, JSONResponse 404)."""
    try:
        return get_tap().get(name), None
    except FormulaError as e:
        logger.warning("Formula lookup failed: %s", e)
        return None, JSONResponse({'error': f'Formula not found: {name}'},
                                  status_code=404)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get('/', response_class=HTMLResponse)
def index(request: Request):
    """Main page — formula list."""
    cellar = get_cellar()
    formulas = [
        {
            'name': f.name,
            'version': f.version,
            'description': f.description,
            'homepage': f.homepage,
            'installed_version': cellar.installed_version(f.name),
        }
        for f in get_tap().formulas()
    ]
    return templates.TemplateResponse(request, "index.html", {
        "formulas": formulas,
        "engine_version": ENGINE_VERSION,
    })


@app.get('/api/formulas', response_model=list[FormulaSummary])
def api_formulas():
    """List every formula in the tap"""
    cellar = get_cellar()
    return [
        {
            'name': f.name,
            'version': f.version,
            'description': f.description,
            'homepage': f.homepage,
            'installed_version': cellar.installed_version(f.name),
        }
        for f in get_tap().formulas()
    ]


@app.get('/api/formulas/{name}', response_model=FormulaDetail,
         responses={404: {"model": ErrorResponse}})
def api_formula(name: str):
    """Get the full formula record"""
    formula, error = _load_or_404(name)
    if error:
        return error
    result = formula.to_dict()
    result['installed_version'] = get_cellar().installed_version(name)
    return result


@app.get('/api/formulas/{name}/validate', response_model=ValidationResponse,
         responses={404: {"model": ErrorResponse}})
def api_formula_validate(name: str):
    """Validate a formula (offline checks only)"""
    formula, error = _load_or_404(name)
    if error:
        return error
    errors, warnings = validate_formula(formula)
    return {
        'name': formula.name,
        'valid': not errors,
        'errors': errors,
        'warnings': warnings,
    }


@app.get('/api/index.json')
def api_index():
    """Tap index with every current formula revision"""
    return get_tap().build_index()


@app.get('/api/installed', response_model=list[InstalledItem])
def api_installed():
    """List installed kegs"""
    return get_cellar().list_packages()


if __name__ == '__main__':
    import argparse
    import uvicorn
    parser = argparse.ArgumentParser()
    parser.add_argument('--tap', type=str, default=None,
                        help='Formula directory')
    parser.add_argument('--prefix', type=str, default=None,
                        help='Cellar root')
    parser.add_argument('--port', type=int, default=8080,
                        help='Server port (default: 8080)')
    args = parser.parse_args()
    _set_paths_for_testing(args.tap or FORMULA_TAP, args.prefix or FORMULA_PREFIX)
    uvicorn.run(app, host='127.0.0.1', port=args.port)
