# Script that assigns postal codes to a CSV of addresses
from argparse import ArgumentParser
from pathlib import Path
import logging
import signal
import threading

import pandas as pd
import geopandas as gpd
from colorama import Fore, Style
from tqdm import tqdm

from postal_resolver.resolution import PostalService
from postal_resolver.settings import settings
from postal_resolver.zones import sources

# Accepted input column names per record field
COLUMN_ALIASES = {
    'admin_code': ['dane_destino', 'dane', 'codigo_municipio', 'admin_code'],
    'city': ['ciudad_destino', 'ciudad', 'municipio', 'city'],
    'department': ['departamento_destino', 'departamento', 'department'],
    'address': ['direccion', 'dirección', 'address'],
    'recipient': ['destinatario', 'nombre_destinatario', 'recipient'],
}


def to_records(df: pd.DataFrame) -> list[dict]:
    rows = df.to_dict(orient='records')
    return [
        {field: sources.find_attribute(row, aliases) for field, aliases in COLUMN_ALIASES.items()}
        for row in rows
    ]


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    parser = ArgumentParser(description='Assign postal codes to a CSV of addresses')
    parser.add_argument('--zones', '-z', type=Path, required=True, help='Postal zone file (any format geopandas reads)')
    parser.add_argument('--index', '-x', type=Path, help='CSV with the reference municipal postal code index')
    parser.add_argument('--master', '-m', type=Path, help='CSV with authoritative names per postal code')
    parser.add_argument('--input', '-i', type=Path, required=True, help='CSV of address records')
    parser.add_argument('--output', '-o', type=Path, required=True)
    parser.add_argument('--clear-cache', '-c', action='store_true')
    parser.add_argument('--resume', '-r', action='store_true',
                        help='Finish the unprocessed rows of the last saved run of this input file')
    args = parser.parse_args()

    service = PostalService.from_settings(settings)
    try:
        if args.clear_cache:
            service.clear_cache()

        zones = sources.zones_from_geodataframe(gpd.read_file(args.zones), source=str(args.zones))
        if args.master:
            zones, _ = sources.apply_master_table(zones, pd.read_csv(args.master, dtype=str).to_dict(orient='records'))
        service.load_zones(zones)

        if args.index:
            entries = sources.municipal_entries_from_frame(pd.read_csv(args.index, dtype=str))
            service.upsert_municipal_index(entries)

        df = pd.read_csv(args.input, dtype=str)
        records = to_records(df)

        cancel = threading.Event()
        signal.signal(signal.SIGINT, lambda *_: cancel.set())

        with tqdm(total=100, desc='Resolving', unit='%') as pbar:
            def on_progress(percent: float) -> None:
                pbar.n = round(percent, 1)
                pbar.refresh()

            def on_pause(seconds: float) -> None:
                tqdm.write(f'{Fore.YELLOW}Quota exhausted, pausing {seconds:.0f}s{Style.RESET_ALL}')

            saved = service.load_batch_state() if args.resume else None
            if saved is not None and saved.file_name == args.input.name and len(saved.outcome) == len(records):
                outcome = service.resume_batch(on_progress=on_progress, on_pause=on_pause, cancel=cancel)
            else:
                if args.resume:
                    tqdm.write(f'{Fore.YELLOW}No saved run of {args.input.name}, processing every row{Style.RESET_ALL}')
                outcome = service.process(records, on_progress=on_progress, on_pause=on_pause, cancel=cancel)
                service.save_batch_state(outcome, file_name=args.input.name)

        df['codigo_postal_asignado'] = [r.result.postal_code for r in outcome]
        df['coordenadas'] = [r.result.coords for r in outcome]
        df['localidad'] = [r.result.sub_area or '' for r in outcome]
        args.output.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(args.output, index=False)

        summary = outcome.summary
        status = f'{Fore.YELLOW}Cancelled' if summary.cancelled else f'{Fore.GREEN}Complete'
        print(f'{status}{Style.RESET_ALL}: {summary.succeeded} assigned, '
              f'{Fore.RED}{summary.failed} flagged{Style.RESET_ALL}, '
              f'{len(outcome) - summary.processed} unprocessed -> {args.output}')
        for code, count in sorted(summary.by_code.items()):
            print(f'  {code}: {count}')
    finally:
        service.close()
