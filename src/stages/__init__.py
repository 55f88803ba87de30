"""
Pipeline stages package.

Each stage module follows a consistent pattern:
- Docstring with Input/Output files documented
- Reads the previous stage's snapshot from data_work/
- main() function as the entry point

Stages
------
s00_ingest      Download and load source layers (or --demo layers)
s01_reproject   Reproject to the analysis CRS, repair polygons, grid cells
s02_link        Census attributes, zone flag, point counts and distances
s03_aggregate   Buffer-weighted coverage values
s04_interpolate Kriging / IDW surface and per-area means
s05_model       OLS model of the final dataset
s06_maps        Choropleth maps
"""
