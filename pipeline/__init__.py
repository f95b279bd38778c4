# pipeline/ — batch scripts for the encounter-rate model.
#
# Run scripts in order:
#   01_prepare_dataset  → balanced spatiotemporal subsample → train/test CSVs
#   02_train_model      → random forest + monotone calibration → joblib artefact
#   03_assess_model     → test-set assessment, importance, partial dependence, peak time
#   04_predict_surface  → encounter rate on the prediction grid → surface CSV
