"""Page table entry formats for x86_64, AArch64, RISC-V and LoongArch64."""