import hydra
from omegaconf import DictConfig, OmegaConf
import microdiff
import pickle
import os
from microdiff.data_loader import load_count_table, load_matrix


@hydra.main(version_base=None, config_path="conf", config_name="config")
def main(cfg: DictConfig) -> None:
    print("Running with config:\n", OmegaConf.to_yaml(cfg))
    print(f"Current working directory: {os.getcwd()}")

    # Load data
    data_path = hydra.utils.to_absolute_path(cfg.data.path)
    adata = load_count_table(
        data_path,
        group_column=cfg.data.group_column,
        index_column=cfg.data.get("index_column"),
        prep_config=cfg.data.get("preprocessing"),
    )

    # Optional taxon graph and structure matrix
    graph = None
    if cfg.data.get("graph_path"):
        graph = load_matrix(hydra.utils.to_absolute_path(cfg.data.graph_path))
    structure_matrix = None
    if cfg.data.get("structure_path"):
        structure_matrix = load_matrix(
            hydra.utils.to_absolute_path(cfg.data.structure_path)
        )

    # Prepare arguments for fit from the config
    kwargs = OmegaConf.to_container(cfg, resolve=True)

    # Move inference-specific args to top level
    kwargs.update(kwargs.pop("inference"))
    kwargs.update(kwargs.pop("model"))

    # Remove keys that are not arguments to fit
    del kwargs["data"]
    if "hydra" in kwargs:
        del kwargs["hydra"]
    target_fdr = kwargs.pop("target_fdr", 0.1)

    # Run the inference
    results = microdiff.fit(
        adata,
        group_key=cfg.data.group_column,
        graph=graph,
        structure_matrix=structure_matrix,
        **kwargs,
    )

    print("Inference complete.")
    print(results.summary(target_fdr))

    # Save the results in the Hydra output directory
    from hydra.core.hydra_config import HydraConfig

    hydra_cfg = HydraConfig.get()
    output_dir = hydra_cfg.runtime.output_dir
    output_file = os.path.join(output_dir, "microdiff_results.pkl")
    print(f"Saving results to {output_file}")
    with open(output_file, "wb") as f:
        pickle.dump(results, f)

    table_file = os.path.join(output_dir, "microdiff_ppi.csv")
    print(f"Saving inclusion table to {table_file}")
    results.to_dataframe(target_fdr).to_csv(table_file)


if __name__ == "__main__":
    main()
