import os
from typing import Optional, Union

import numpy as np
import pandas as pd
import scanpy as sc
from anndata import AnnData
from omegaconf import DictConfig, OmegaConf

# ==============================================================================
# Count tables
# ==============================================================================


def load_count_table(
    path: str,
    group_column: Optional[str] = None,
    index_column: Optional[Union[int, str]] = None,
    prep_config: Optional[Union[DictConfig, dict]] = None,
) -> AnnData:
    """
    Load a samples-by-taxa count table from a CSV or h5ad file and optionally
    filter samples and taxa with scanpy.

    Parameters
    ----------
    path : str
        Path to the data file (CSV or h5ad). For CSV, the file should have
        samples as rows and taxa as columns; lines starting with ``#`` are
        ignored.
    group_column : str, optional
        CSV column holding the group label. It is moved from the count table
        into ``adata.obs``. For h5ad input it must already be an ``obs``
        column.
    index_column : int or str, optional
        CSV column holding the sample names.
    prep_config : DictConfig or dict, optional
        Preprocessing steps. Supported keys:
            - "filter_samples": dict of arguments for scanpy.pp.filter_cells
            - "filter_taxa": dict of arguments for scanpy.pp.filter_genes
            - "min_prevalence": minimum fraction of samples in which a taxon
              must be observed

    Returns
    -------
    AnnData
        Counts in ``X`` (samples x taxa); the group label, when given, in
        ``obs[group_column]``.
    """
    print(f"Loading data from {path}...")

    _, extension = os.path.splitext(path)
    if extension == ".h5ad":
        adata = sc.read_h5ad(path)
        if group_column is not None and group_column not in adata.obs:
            raise ValueError(
                f"Group column '{group_column}' not found in adata.obs"
            )
    elif extension == ".csv":
        counts_df = pd.read_csv(path, comment="#", index_col=index_column)
        obs = pd.DataFrame(index=counts_df.index.astype(str))
        if group_column is not None:
            if group_column not in counts_df.columns:
                raise ValueError(
                    f"Group column '{group_column}' not found in {path}"
                )
            obs[group_column] = counts_df.pop(group_column).to_numpy()
        adata = AnnData(
            X=counts_df.to_numpy(dtype=np.float32),
            obs=obs,
            var=pd.DataFrame(index=counts_df.columns.astype(str)),
        )
    else:
        raise ValueError(
            f"Unsupported file format: {extension}. Please use .csv or .h5ad"
        )

    print(f"Original data shape: {adata.shape}")

    if prep_config:
        if isinstance(prep_config, DictConfig):
            prep_config = OmegaConf.to_container(prep_config, resolve=True)
        print("Applying preprocessing steps...")

        if "filter_samples" in prep_config:
            print(f"Filtering samples with {prep_config['filter_samples']}")
            sc.pp.filter_cells(adata, **prep_config["filter_samples"])
            print(f"Shape after filtering samples: {adata.shape}")

        if "filter_taxa" in prep_config:
            print(f"Filtering taxa with {prep_config['filter_taxa']}")
            sc.pp.filter_genes(adata, **prep_config["filter_taxa"])
            print(f"Shape after filtering taxa: {adata.shape}")

        if prep_config.get("min_prevalence"):
            min_samples = int(
                np.ceil(prep_config["min_prevalence"] * adata.n_obs)
            )
            print(f"Keeping taxa observed in >= {min_samples} samples")
            sc.pp.filter_genes(adata, min_cells=min_samples)
            print(f"Shape after prevalence filtering: {adata.shape}")

    return adata


# ==============================================================================
# Graphs and structure matrices
# ==============================================================================


def load_matrix(path: str, index_column: Optional[int] = 0) -> np.ndarray:
    """Load a numeric matrix (taxon adjacency or structure matrix) from CSV.

    The first column holds row labels unless ``index_column`` is None.
    """
    print(f"Loading matrix from {path}...")
    df = pd.read_csv(path, comment="#", index_col=index_column)
    return df.to_numpy(dtype=np.float64)
