import pytest
import yaml
from click.testing import CliRunner

from qrstamp.cli.runtime import DEFAULT_CONFIG_FILE

from .samples import RECORDS_CSV, template_pdf

TEMPLATE_PATH = 'Flyer-Apo-de_de.pdf'
RECORDS_PATH = 'records.csv'


@pytest.fixture
def cli_runner():
    runner = CliRunner()
    with runner.isolated_filesystem():
        with open(TEMPLATE_PATH, 'wb') as outf:
            outf.write(template_pdf(page_count=2))
        with open(RECORDS_PATH, 'w', encoding='utf-8') as outf:
            outf.write(RECORDS_CSV)
        yield runner


def _write_config(config: dict, fname: str = DEFAULT_CONFIG_FILE):
    with open(fname, 'w') as outf:
        yaml.dump(config, outf)
